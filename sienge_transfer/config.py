"""Location and validation of the local configuration."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from typing import Iterable

from sienge_transfer.models import Config, Empresa, Obra

APP_DIR_NAME = "sienge-transfer"
CONFIG_FILE_NAME = "config.json"


class ConfigError(ValueError):
    """Raised when the configuration is invalid."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"config.json invalido: {detail}")


def _user_config_dir() -> str:
    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA", "")
        if not appdata:
            raise OSError("%AppData% is not defined")
        return appdata
    if sys.platform == "darwin":
        home = os.environ.get("HOME", "")
        if not home:
            raise OSError("$HOME is not defined")
        return os.path.join(home, "Library", "Application Support")
    xdg = os.environ.get("XDG_CONFIG_HOME", "")
    if xdg:
        if not os.path.isabs(xdg):
            raise OSError("path in $XDG_CONFIG_HOME is relative")
        return xdg
    home = os.environ.get("HOME", "")
    if not home:
        raise OSError("neither $XDG_CONFIG_HOME nor $HOME are defined")
    return os.path.join(home, ".config")


def default_dir() -> str:
    """Per-user directory holding the application's files."""
    return os.path.join(_user_config_dir(), APP_DIR_NAME)


@dataclass(frozen=True)
class Store:
    """Local directory where the configuration lives."""

    dir: str

    def ensure_dir(self) -> None:
        """Create the directory, readable only by the owner."""
        if not self.dir.strip():
            raise ConfigError("diretorio local nao informado")
        os.makedirs(self.dir, mode=0o700, exist_ok=True)

    def config_path(self) -> str:
        return os.path.join(self.dir, CONFIG_FILE_NAME)

    def exists(self) -> bool:
        return os.path.exists(self.config_path())


def default_store() -> Store:
    return Store(default_dir())


def _validate_usuario(cfg: Config) -> None:
    if not cfg.usuario.nome.strip():
        raise ConfigError("nome do usuario obrigatorio")
    if not cfg.usuario.cargo.strip():
        raise ConfigError("cargo do usuario obrigatorio")


def _validate_empresa(empresa: Empresa) -> None:
    if not empresa.nome.strip():
        raise ConfigError("nome da empresa obrigatorio")
    if not empresa.subdominio.strip():
        raise ConfigError("subdominio da empresa obrigatorio")
    if not empresa.api_usuario.strip():
        raise ConfigError("usuario da API obrigatorio")
    if not empresa.api_senha.strip():
        raise ConfigError("senha da API obrigatoria")


def _validate_obras(obras: Iterable[Obra]) -> None:
    obras = list(obras)
    if not obras:
        raise ConfigError("cadastre pelo menos uma obra")
    seen: set[int] = set()
    for obra in obras:
        if obra.id <= 0:
            raise ConfigError("ID da obra deve ser numerico positivo")
        if not obra.nome.strip():
            raise ConfigError("nome da obra obrigatorio")
        if obra.id in seen:
            raise ConfigError("ID da obra duplicado")
        seen.add(obra.id)


def validate_plain_config(cfg: Config) -> None:
    """Validate a configuration whose API password is in clear text (in memory)."""
    _validate_usuario(cfg)
    _validate_empresa(cfg.empresa)
    if cfg.empresa.senha_cifrada:
        raise ConfigError("senha deve estar em texto claro apenas em memoria")
    _validate_obras(cfg.obras)


def validate_encrypted_config(cfg: Config) -> None:
    """Validate a configuration as stored on disk, with an encrypted password."""
    _validate_usuario(cfg)
    _validate_empresa(cfg.empresa)
    if not cfg.empresa.senha_cifrada:
        raise ConfigError("senha da API deve estar criptografada")
    _validate_obras(cfg.obras)