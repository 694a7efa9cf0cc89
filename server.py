import os
import sys
import logging
import argparse
from sdftp.config import load_config, ConfigError
from sdftp.server_core import start_ftp_server

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Servidor FTP de una sola sesión sobre un directorio local")
    parser.add_argument("--config", help="fichero JSON de configuración (por defecto FTP_CONFIG o ftp_config.json)")
    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"[ERROR][CFG] Configuración inválida: {e}")
        sys.exit(2)

    logging.basicConfig(level=logging.DEBUG if config.debug else logging.INFO, format=LOG_FORMAT)

    print("------------------------------------------------")
    print(f"--- Iniciando servidor FTP (raíz: {config.root}) ---")
    print("------------------------------------------------")

    # Crear directorio de datos si no existe
    os.makedirs(config.root, exist_ok=True)

    try:
        start_ftp_server(config)
    except PermissionError:
        # Sin privilegios no se puede abrir el puerto 21
        if config.ctrl_port < 1024:
            print(f"Aviso: no se puede usar el puerto {config.ctrl_port} sin privilegios. Usando 2121.")
            start_ftp_server(config._replace(ctrl_port=2121))
        else:
            raise
