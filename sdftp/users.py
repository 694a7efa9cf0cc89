#!/usr/bin/env python3
import os
import hashlib
import hmac
import getpass
from sdftp.config import CONFIG_FILE, load_config_file, save_config_file

ANONYMOUS = "anonymous"
HASH_PREFIX = "pbkdf2_sha256$"
ITERATIONS = 260000

def hash_password(password: str) -> str:
    """Devuelve hash PBKDF2 seguro."""
    salt = os.urandom(16)
    dk = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, ITERATIONS)
    return f"pbkdf2_sha256${ITERATIONS}${salt.hex()}${dk.hex()}"

def verify_password(stored_hash: str, password: str) -> bool:
    """Verifica contraseña comparando con el hash guardado."""
    try:
        algo, iter_str, salt_hex, hash_hex = stored_hash.split("$")
        salt = bytes.fromhex(salt_hex)
        new_hash = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, int(iter_str))
        return hmac.compare_digest(new_hash.hex(), hash_hex)
    except ValueError:
        return False

def password_matches(stored: str, password: str) -> bool:
    # La contraseña configurada puede venir en claro o como hash PBKDF2
    if stored.startswith(HASH_PREFIX):
        return verify_password(stored, password)
    return hmac.compare_digest(stored.encode(), password.encode())

def check_user(config, user):
    return user == config.user

def check_credentials(config, user, password):
    """Con usuario 'anonymous' cualquier contraseña es válida."""
    if not check_user(config, user):
        return False
    if config.user == ANONYMOUS:
        return True
    return password_matches(config.password, password or "")

# ----------- Interfaz CLI -----------

def main(path=None):
    path = path or os.environ.get("FTP_CONFIG", CONFIG_FILE)
    print("=== Configurar usuario FTP ===")

    username = input("Nombre de usuario: ").strip()
    if not username:
        print("❌ Usuario no puede estar vacío.")
        return 1

    values = load_config_file(path)
    if values.get("user") and values["user"] != username:
        print(f"⚠️ Se reemplazará el usuario '{values['user']}'.")
        choice = input("¿Deseas continuar? (s/n): ").lower()
        if choice != "s":
            print("Operación cancelada.")
            return 1

    if username == ANONYMOUS:
        password = ""
    else:
        password = getpass.getpass("Contraseña: ")
        confirm = getpass.getpass("Confirmar contraseña: ")
        if password != confirm:
            print("❌ Las contraseñas no coinciden.")
            return 1

    values["user"] = username
    values["password"] = hash_password(password)
    save_config_file(path, values)
    print(f"✅ Usuario '{username}' guardado correctamente en {path}")
    return 0

if __name__ == "__main__":
    raise SystemExit(main())
