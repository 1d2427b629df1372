# seguranca.py
"""
Integridade e privacidade: SHA-256 em streaming para o envelope do
documento e máscaras de CPF/CNPJ para as linhas de log.
"""

from __future__ import annotations
from pathlib import Path
from typing import BinaryIO, Optional, Union
import hashlib
import re
import logging

log = logging.getLogger("ingestor_fiscal.seguranca")
if not log.handlers:
    _h = logging.StreamHandler()
    _h.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    log.addHandler(_h)
    log.setLevel(logging.INFO)

TAMANHO_BLOCO = 65536

# ---------------- Hash ----------------

def _sha256_stream(fp: BinaryIO, tamanho_bloco: int) -> str:
    digest = hashlib.sha256()
    for bloco in iter(lambda: fp.read(tamanho_bloco), b""):
        digest.update(bloco)
    return digest.hexdigest()

def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()

def sha256_path(path: Union[str, Path], tamanho_bloco: int = TAMANHO_BLOCO) -> str:
    """Hash em streaming: memória limitada ao bloco, qualquer que seja o arquivo."""
    with open(path, "rb") as fp:
        resultado = _sha256_stream(fp, tamanho_bloco)
    log.debug("SHA-256 de '%s': %s", path, resultado)
    return resultado

# ---------------- Máscaras (uso em logs) ----------------

def _mascarar(digitos: str, tamanho: int, visivel_inicio: int, meio: str, visivel_fim: int, rotulo: str) -> str:
    if len(digitos) != tamanho or not digitos.isdigit():
        return f"{rotulo} Inválido"
    return f"{digitos[:visivel_inicio]}{meio}{digitos[tamanho - visivel_fim:]}"

def mascarar_cpf(cpf_limpo: str) -> str:
    """123.***.***-99"""
    return _mascarar(cpf_limpo or "", 11, 3, ".***.***-", 2, "CPF")

def mascarar_cnpj(cnpj_limpo: str) -> str:
    """12.***.***/0001-99: mantém raiz curta, filial e DV."""
    cnpj_limpo = cnpj_limpo or ""
    if len(cnpj_limpo) != 14 or not cnpj_limpo.isdigit():
        return "CNPJ Inválido"
    return _mascarar(cnpj_limpo, 14, 2, f".***.***/{cnpj_limpo[8:12]}-", 2, "CNPJ")

def mascarar_documento_fiscal(doc_str: Optional[str]) -> str:
    """CPF ou CNPJ pelo número de dígitos; outros textos (ex.: ISENTO) ficam truncados."""
    if not doc_str:
        return ""
    digitos = re.sub(r"\D", "", doc_str)
    mascaras = {11: mascarar_cpf, 14: mascarar_cnpj}
    if len(digitos) in mascaras:
        return mascaras[len(digitos)](digitos)
    return doc_str if len(doc_str) <= 4 else doc_str[:4] + "..."


__all__ = [
    "TAMANHO_BLOCO", "sha256_bytes", "sha256_path",
    "mascarar_cpf", "mascarar_cnpj", "mascarar_documento_fiscal",
]
