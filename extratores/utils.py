# extratores/utils.py

from __future__ import annotations
from datetime import date, datetime, time
from typing import Any, List, Optional, Tuple
import logging
import math
import re

from erros import FormatError

# ---------------- Logger único dos extratores ----------------
log = logging.getLogger("ingestor_fiscal.extratores")
if not log.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    handler.setFormatter(formatter)
    log.addHandler(handler)
    log.setLevel(logging.INFO)

# --------------- Constantes/regex e helpers ---------------
_WHITESPACE_RE = re.compile(r"\s+", re.S)
_NUMERO_RE = re.compile(r"[-+]?(?:\d+(?:\.\d*)?|\.\d+)")
_DATA_BR_RE = re.compile(r"(\d{2})/(\d{2})/(\d{4})")
_DATA_SPED_RE = re.compile(r"(\d{2})(\d{2})(\d{4})")
_DATA_ISO_RE = re.compile(r"(\d{4})-(\d{2})-(\d{2})(?:[ T].*)?")

def _norm_ws(texto: Optional[str]) -> str:
    return _WHITESPACE_RE.sub(" ", (texto or "").strip())

def _only_digits(s: Optional[str]) -> str:
    return re.sub(r"\D+", "", str(s)) if s else ""

# --------------- Valores numéricos ---------------

def parse_valor_br(texto: Any) -> float:
    """
    Converte valor no formato brasileiro ("1.234,56", "R$ 1.234,56") em float.
    O ponto é sempre separador de milhar; a vírgula, decimal.
    """
    if texto is None:
        raise FormatError("Valor ausente", valor=texto)
    s = _WHITESPACE_RE.sub("", str(texto).replace("R$", ""))
    s = s.replace(".", "").replace(",", ".")
    if not _NUMERO_RE.fullmatch(s):
        raise FormatError(f"Valor inválido: {texto!r}", valor=texto)
    return float(s)

def parse_numero(texto: Any) -> float:
    """
    Aceita tanto o formato BR ("1.234,56", "1000,00") quanto o decimal com
    ponto usado nos XMLs ("1000.00").
    """
    if texto is None:
        raise FormatError("Valor ausente", valor=texto)
    if isinstance(texto, (int, float)) and not isinstance(texto, bool):
        if not math.isfinite(float(texto)):
            raise FormatError(f"Valor inválido: {texto!r}", valor=texto)
        return float(texto)
    s = _WHITESPACE_RE.sub("", str(texto).replace("R$", ""))
    # Normalização heurística:
    # - '.' e ',' presentes: o último separador é o decimal
    # - apenas ',': decimal BR
    # - mais de um '.': milhares sem decimal
    if "," in s and "." in s:
        if s.rfind(".") < s.rfind(","):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", "")
    elif "," in s:
        s = s.replace(",", ".") if s.count(",") == 1 else s
    elif s.count(".") > 1:
        s = s.replace(".", "")
    if not _NUMERO_RE.fullmatch(s):
        raise FormatError(f"Valor inválido: {texto!r}", valor=texto)
    return float(s)

def formatar_valor_br(valor: Any, casas: int = 2) -> str:
    """1234.56 -> "1.234,56"."""
    try:
        v = float(valor)
    except (TypeError, ValueError):
        raise FormatError(f"Valor inválido: {valor!r}", valor=valor)
    if not math.isfinite(v):
        raise FormatError(f"Valor inválido: {valor!r}", valor=valor)
    texto = f"{abs(v):,.{casas}f}"
    texto = texto.replace(",", "_").replace(".", ",").replace("_", ".")
    if v < 0 and round(abs(v), casas) != 0:
        return f"-{texto}"
    return texto

def numero_tolerante(texto: Optional[str], campo: str, falhas: Optional[List[FormatError]] = None) -> float:
    """Campo ausente vale 0.0; campo ilegível vale 0.0 e registra a falha."""
    if texto is None or not str(texto).strip():
        return 0.0
    try:
        return parse_numero(texto)
    except FormatError as e:
        log.debug("Campo '%s' com valor ilegível (%r); assumindo 0.", campo, texto)
        if falhas is not None:
            falhas.append(e.com_campo(campo))
        return 0.0

# --------------- Datas ---------------

def parse_data_br(texto: Any) -> date:
    """Aceita dd/mm/aaaa, ddmmaaaa (SPED) e aaaa-mm-dd[Thh:mm:ss...]."""
    s = str(texto or "").strip()
    m = _DATA_BR_RE.fullmatch(s) or _DATA_SPED_RE.fullmatch(s)
    if m:
        dia, mes, ano = (int(g) for g in m.groups())
    else:
        m = _DATA_ISO_RE.fullmatch(s)
        if not m:
            raise FormatError(f"Data inválida: {texto!r}", valor=texto)
        ano, mes, dia = (int(g) for g in m.groups())
    try:
        return date(ano, mes, dia)
    except ValueError:
        raise FormatError(f"Data inexistente: {texto!r}", valor=texto)

def parse_data_hora(texto: Any) -> datetime:
    """Timestamps ISO (dhEmi) com ou sem fuso; datas simples viram meia-noite."""
    s = str(texto or "").strip()
    if not s:
        raise FormatError("Data ausente", valor=texto)
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return datetime.combine(parse_data_br(s), time())

def data_tolerante(texto: Optional[str], campo: str, falhas: Optional[List[FormatError]] = None, *, com_hora: bool = False):
    if texto is None or not str(texto).strip():
        return None
    try:
        return parse_data_hora(texto) if com_hora else parse_data_br(texto)
    except FormatError as e:
        if falhas is not None:
            falhas.append(e.com_campo(campo))
        return None

def formatar_data_br(d: date) -> str:
    return d.strftime("%d/%m/%Y")

# --------------- Texto ---------------

def decodificar_texto(conteudo: bytes) -> Tuple[str, str]:
    """UTF-8 primeiro; arquivos SPED costumam vir em latin-1."""
    try:
        return conteudo.decode("utf-8"), "utf-8"
    except UnicodeDecodeError:
        return conteudo.decode("latin-1"), "latin-1"

# --------------- Identificadores ---------------

def formatar_cnpj(cnpj: Optional[str]) -> str:
    c = _only_digits(cnpj)
    if len(c) != 14:
        raise FormatError(f"CNPJ com tamanho inválido: {cnpj!r}", valor=cnpj)
    return f"{c[:2]}.{c[2:5]}.{c[5:8]}/{c[8:12]}-{c[12:]}"

def formatar_cpf(cpf: Optional[str]) -> str:
    c = _only_digits(cpf)
    if len(c) != 11:
        raise FormatError(f"CPF com tamanho inválido: {cpf!r}", valor=cpf)
    return f"{c[:3]}.{c[3:6]}.{c[6:9]}-{c[9:]}"

def formatar_cep(cep: Optional[str]) -> str:
    c = _only_digits(cep)
    if len(c) != 8:
        raise FormatError(f"CEP com tamanho inválido: {cep!r}", valor=cep)
    return f"{c[:5]}-{c[5:]}"

__all__ = [
    "log",
    "_norm_ws","_only_digits",
    "parse_valor_br","parse_numero","formatar_valor_br","numero_tolerante",
    "parse_data_br","parse_data_hora","data_tolerante","formatar_data_br",
    "decodificar_texto",
    "formatar_cnpj","formatar_cpf","formatar_cep",
]
