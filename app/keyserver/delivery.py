"""Key delivery: derive one IBE key per approved id and encrypt it.

Derivation is deterministic in (master key, id); encryption draws fresh
randomness every call, so two deliveries of the same id differ. Derived
keys are never cached.
"""

import logging
from typing import List, Sequence

from .api_models import DecryptionKey
from .crypto import KeyCryptoBackend

log = logging.getLogger(__name__)


class KeyDeliveryService:
    def __init__(self, master_key: bytes, backend: KeyCryptoBackend):
        self._master_key = master_key
        self._backend = backend

    def derive_and_encrypt(
        self, key_ids: Sequence[bytes], enc_key: bytes
    ) -> List[DecryptionKey]:
        """Return one DecryptionKey per id, in the order given."""
        keys = []
        for key_id in key_ids:
            derived = self._backend.extract(self._master_key, key_id)
            keys.append(
                DecryptionKey(id=key_id, encrypted_key=self._backend.encrypt(derived, enc_key))
            )
        log.debug(f"Derived and encrypted {len(keys)} key(s)")
        return keys
