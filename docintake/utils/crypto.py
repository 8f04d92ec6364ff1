import hashlib

def hash_token(s: str) -> str:
    return hashlib.sha256(s.encode()).hexdigest()

def caller_id_for_token(token: str) -> str:
    """Stable, non-reversible caller id derived from an API token"""
    return "key-" + hash_token(token)[:16]
