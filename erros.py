# erros.py
"""
Exceções do ingestor fiscal.

Cada exceção define:
- message: mensagem legível
- code: código programático (ex: "FORMAT_ERROR")

Estruturais, de tipo não suportado e de integridade interrompem o
processamento do arquivo. FormatError é recuperada localmente pelos
extratores (campo vira zero/vazio) e registrada no relatório de qualidade.
"""

from __future__ import annotations
from typing import Any, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from modelos import RelatorioIntegridade


class ErroFiscal(Exception):
    """Exceção base. Todas as exceções do ingestor herdam desta."""

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        self.code = code or "FISCAL_ERROR"
        super().__init__(self.message)


class StructuralError(ErroFiscal):
    """Seção obrigatória ausente ou documento ilegível."""

    def __init__(self, message: str, code: str = "STRUCTURAL_ERROR"):
        super().__init__(message, code)


class MissingStructureError(StructuralError):
    """Elemento raiz do tipo declarado não encontrado."""

    def __init__(self, estrutura: str):
        super().__init__(f"Estrutura {estrutura} não encontrada", "MISSING_STRUCTURE")
        self.estrutura = estrutura


class FormatError(ErroFiscal):
    """Campo isolado que não pôde ser interpretado (número, data)."""

    def __init__(self, message: str, campo: Optional[str] = None, valor: Any = None):
        super().__init__(message, "FORMAT_ERROR")
        self.campo = campo
        self.valor = valor

    def com_campo(self, campo: str) -> "FormatError":
        return FormatError(self.message, campo=campo, valor=self.valor)


class UnsupportedTypeError(ErroFiscal):
    """Tipo declarado ou extensão sem tratador."""

    def __init__(self, message: str, code: str = "UNSUPPORTED_TYPE"):
        super().__init__(message, code)


class UnsupportedDocumentTypeError(UnsupportedTypeError):
    def __init__(self, tipo: Any):
        super().__init__(f"Tipo de documento não suportado: {tipo!r}", "UNSUPPORTED_DOCUMENT_TYPE")
        self.tipo = tipo


class UnsupportedFileTypeError(UnsupportedTypeError):
    def __init__(self, nome: str, motivo: str = "Tipo de arquivo não suportado"):
        super().__init__(f"{motivo}: {nome}", "UNSUPPORTED_FILE_TYPE")
        self.nome = nome


class IntegrityError(ErroFiscal):
    """Falha de integridade do arquivo; bloqueia o parsing semântico."""

    def __init__(self, relatorio: "RelatorioIntegridade"):
        erros = "; ".join(relatorio.erros) or "arquivo inválido"
        super().__init__(f"Falha de integridade: {erros}", "INTEGRITY_ERROR")
        self.relatorio = relatorio


__all__ = [
    "ErroFiscal",
    "StructuralError",
    "MissingStructureError",
    "FormatError",
    "UnsupportedTypeError",
    "UnsupportedDocumentTypeError",
    "UnsupportedFileTypeError",
    "IntegrityError",
]
