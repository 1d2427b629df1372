# extratores/planilha_icms.py

from __future__ import annotations

import re
import unicodedata
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import pandas as pd

from erros import FormatError, StructuralError
from modelos import RegraIcmsPlanilha
from .utils import log, _norm_ws, _only_digits, numero_tolerante

# chave normalizada do cabeçalho -> campo de RegraIcmsPlanilha
_COLUNAS: Dict[str, str] = {
    "ncm": "ncm",
    "cfop": "cfop",
    "cst": "cst",
    "descricao": "descricao",
    "aliquota": "aliquota",
    "basereduzida": "base_reduzida",
    "beneficio": "beneficio",
    "tipocliente": "tipo_cliente",
    "tipooperacao": "tipo_operacao",
    "protege": "protege",
    "proteje": "protege",
    "difal": "difal",
    "ciap": "ciap",
}
_NUMERICOS = {"aliquota", "base_reduzida"}
_FLAGS = {"protege", "difal", "ciap"}
_VERDADEIROS = {"sim", "s", "x", "1", "true", "verdadeiro", "yes"}


def _chave_coluna(nome: Any) -> str:
    texto = unicodedata.normalize("NFKD", str(nome))
    texto = "".join(c for c in texto if not unicodedata.combining(c))
    return re.sub(r"[^a-z0-9]", "", texto.lower())


def _flag(valor: str) -> bool:
    return _chave_coluna(valor) in _VERDADEIROS


class ExtratorPlanilhaIcms:
    """Regras de ICMS da primeira aba de uma planilha (.xlsx/.xls)."""

    def extrair(self, caminho: Union[str, Path], falhas: Optional[List[FormatError]] = None) -> Tuple[RegraIcmsPlanilha, ...]:
        caminho = Path(caminho)
        engine = "openpyxl" if caminho.suffix.lower() == ".xlsx" else None
        try:
            df = pd.read_excel(caminho, sheet_name=0, dtype=str, engine=engine).fillna("")
        except ImportError:
            raise
        except Exception as e:
            log.error(f"Falha ao ler planilha '{caminho.name}': {e}")
            raise StructuralError(f"Planilha ilegível: {e}", "UNREADABLE_SPREADSHEET") from e

        mapeamento: Dict[str, str] = {}
        for coluna in df.columns:
            campo = _COLUNAS.get(_chave_coluna(coluna))
            if campo and campo not in mapeamento.values():
                mapeamento[coluna] = campo
        if not mapeamento:
            log.warning("Planilha '%s' sem colunas reconhecidas (%s).", caminho.name, ", ".join(map(str, df.columns)))
            return ()

        regras: List[RegraIcmsPlanilha] = []
        for n, linha in enumerate(df.to_dict(orient="records"), start=2):
            valores: Dict[str, Any] = {}
            for coluna, campo in mapeamento.items():
                bruto = _norm_ws(str(linha.get(coluna, "")))
                if campo in _NUMERICOS:
                    valores[campo] = numero_tolerante(bruto, f"{campo} (linha {n})", falhas)
                elif campo in _FLAGS:
                    valores[campo] = _flag(bruto)
                elif campo in ("ncm", "cfop", "cst"):
                    valores[campo] = _only_digits(bruto)
                else:
                    valores[campo] = bruto
            if not any(valores.values()):
                continue
            regras.append(RegraIcmsPlanilha(**valores))

        log.info("Planilha '%s': %d regras de ICMS extraídas.", caminho.name, len(regras))
        return tuple(regras)


__all__ = ["ExtratorPlanilhaIcms"]
