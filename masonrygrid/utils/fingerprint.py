import hashlib

EMPTY_FINGERPRINT = 'empty'


def item_set_fingerprint(entries, salt: str = '') -> str:
    """
    Hash (id, aspect_ratio) pairs in input order.

    Adding, removing or reordering items, correcting a dimension or changing
    the salt (the ordering configuration signature) all yield a new value.
    """
    entries = list(entries)
    if not entries:
        return EMPTY_FINGERPRINT
    digest = hashlib.sha256()
    digest.update(salt.encode())
    for item_id, aspect_ratio in entries:
        # Type prefix keeps int 1 and str '1' apart
        digest.update(f'|{type(item_id).__name__}:{item_id}='
                      f'{aspect_ratio:.6f}'.encode())
    return digest.hexdigest()
