# cart_session/utils/keys.py
import secrets


def generate_key() -> str:
    # 128 bitow z CSPRNG, hex 32 znaki
    return secrets.token_hex(16)
