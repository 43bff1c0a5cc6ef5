"""JudgeSync core: errors, logging, security, backoff."""
