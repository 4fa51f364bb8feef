# Security package: tokens, password hashing, auth dependencies
