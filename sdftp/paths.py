FTP_CWD_SIZE = 255 + 8      # Capacidad máxima de una ruta absoluta


class PathTooLongError(ValueError):
    pass


def resolve(current_dir, param, capacity=FTP_CWD_SIZE):
    """
    Construye la ruta absoluta a partir del directorio actual y el parámetro
    del cliente (ruta absoluta, relativa o vacía).
    Lanza PathTooLongError si la ruta no cabe en `capacity`.
    """
    if not param or param == "/":
        return "/"
    if param.startswith("/"):
        path = param
    elif current_dir.endswith("/"):
        path = current_dir + param
    else:
        path = current_dir + "/" + param

    # Quitar la barra final salvo en la raíz
    path = path.rstrip("/") or "/"
    if len(path) >= capacity:
        raise PathTooLongError(f"path exceeds {capacity - 1} characters")
    return path


def parent_dir(current_dir):
    pos = current_dir.rfind("/")
    if pos > 0:
        return current_dir[:pos]
    return "/"
