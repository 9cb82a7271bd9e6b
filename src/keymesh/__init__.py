"""
KeyMesh -- multi-device, multi-organization key distribution.

Your private keys, on every device you own and with every teammate
you trust. The directory only ever sees public keys and ciphertext.
"""

import os

__version__ = "0.1.0"

KEYMESH_HOME = os.environ.get("KEYMESH_HOME", "~/.keymesh")
