# extratores/protege_pdf.py
"""
Regras do PROTEGE Goiás a partir do texto de PDFs da SEFAZ-GO.

PROTEGE 15%: contribuição exigida de quem usa benefícios fiscais (base
reduzida, crédito outorgado, DIFAL, CIAP). PROTEGE 2%: adicional sobre o
ICMS de produtos específicos.
"""

from __future__ import annotations

import re
import unicodedata
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import pypdfium2 as pdfium

from erros import StructuralError
from modelos import BeneficioProtege, RegraProtege
from .utils import log, _norm_ws, parse_numero

_PROTEGE_15_RE = re.compile(r"PROTEGE\s*(?:GOIAS\s*)?15\s*%")
_PROTEGE_2_RE = re.compile(r"PROTEGE\s*(?:GOIAS\s*)?2\s*%")
_PERCENTUAL_RE = re.compile(r"(\d+(?:[.,]\d+)?)\s*%")
_NCM_RE = re.compile(r"(?<![\d.])(\d{4})\.?(\d{2})\.?(\d{2})(?![\d.])")

# (código, tipo, rótulo normalizado, descrição)
_BENEFICIOS_15: Tuple[Tuple[str, str, str, str], ...] = (
    ("BR001", "BASE_REDUZIDA", "BASE REDUZIDA", "Base Reduzida de ICMS"),
    ("CO001", "CREDITO_OUTORGADO", "CREDITO OUTORGADO", "Crédito Outorgado"),
    ("DIFAL001", "DIFAL", "DIFAL", "DIFAL - Diferencial de Alíquotas"),
    ("CIAP001", "CIAP", "CIAP", "CIAP - Crédito de ICMS sobre Ativo Permanente"),
)


def _normalizar(texto: str) -> str:
    texto = unicodedata.normalize("NFKD", texto)
    return "".join(c for c in texto if not unicodedata.combining(c)).upper()


def _percentuais(linha: str) -> Tuple[float, ...]:
    return tuple(parse_numero(m) for m in _PERCENTUAL_RE.findall(linha))


def _itens_apos_rotulo(linha: str) -> List[str]:
    _, _, resto = linha.partition(":")
    return [_norm_ws(p) for p in resto.split(",") if _norm_ws(p)]


def interpretar_texto(texto: str) -> Tuple[RegraProtege, ...]:
    """Texto extraído do PDF -> regras PROTEGE. Sem conteúdo reconhecível, tupla vazia."""
    linhas = [_norm_ws(l) for l in (texto or "").splitlines() if _norm_ws(l)]
    normalizadas = [_normalizar(l) for l in linhas]
    corpo = "\n".join(normalizadas)

    tem_15 = bool(_PROTEGE_15_RE.search(corpo))
    tem_2 = bool(_PROTEGE_2_RE.search(corpo))
    if not (tem_15 or tem_2):
        return ()

    condicoes: List[str] = []
    produtos: List[str] = []
    linhas_beneficio: Dict[str, str] = {}
    for original, norm in zip(linhas, normalizadas):
        if norm.startswith(("CONDICOES:", "CONDICAO:")):
            condicoes.extend(_itens_apos_rotulo(original))
        elif norm.startswith("PRODUTOS:"):
            produtos.extend(_itens_apos_rotulo(original))
        else:
            for _, tipo, rotulo, _ in _BENEFICIOS_15:
                if norm.startswith(rotulo) and tipo not in linhas_beneficio:
                    linhas_beneficio[tipo] = original

    ncms: List[str] = []
    for m in _NCM_RE.finditer(corpo):
        ncm = "".join(m.groups())
        if ncm not in ncms:
            ncms.append(ncm)

    regras: List[RegraProtege] = []
    if tem_15:
        beneficios = tuple(
            BeneficioProtege(
                codigo=codigo,
                descricao=descricao,
                tipo=tipo,
                percentuais=_percentuais(linhas_beneficio.get(tipo, "")),
                condicoes=("Adesão ao PROTEGE 15%",),
            )
            for codigo, tipo, _, descricao in _BENEFICIOS_15
        )
        regras.append(RegraProtege(
            descricao="PROTEGE 15% - Regime Normal com Benefícios Fiscais",
            tipo_protege="PROTEGE_15",
            aliquota_protege=15.0,
            beneficios=beneficios,
            condicoes_elegibilidade=tuple(condicoes),
            ncms=tuple(ncms),
        ))
    if tem_2:
        regras.append(RegraProtege(
            descricao="PROTEGE 2% - Adicional sobre ICMS para Produtos Específicos",
            tipo_protege="PROTEGE_2",
            aliquota_protege=2.0,
            condicoes_elegibilidade=tuple(condicoes),
            produtos_aplicaveis=tuple(produtos),
            ncms=tuple(ncms),
        ))
    return tuple(regras)


class ExtratorProtegePdf:

    def extrair_texto(self, caminho: Union[str, Path]) -> str:
        """Texto de todas as páginas; PDF ilegível vira StructuralError."""
        try:
            pdf = pdfium.PdfDocument(str(caminho))
        except pdfium.PdfiumError as e:
            log.error("Falha ao abrir PDF '%s': %s", Path(caminho).name, e)
            raise StructuralError(f"PDF ilegível: {e}", "UNREADABLE_PDF") from e
        try:
            paginas: List[str] = []
            for i in range(len(pdf)):
                page = pdf[i]
                textpage = page.get_textpage()
                paginas.append(textpage.get_text_range() or "")
                textpage.close()
                page.close()
        except pdfium.PdfiumError as e:
            raise StructuralError(f"PDF ilegível: {e}", "UNREADABLE_PDF") from e
        finally:
            pdf.close()
        return "\n".join(paginas)

    def extrair(self, caminho: Union[str, Path], texto: Optional[str] = None) -> Tuple[RegraProtege, ...]:
        caminho = Path(caminho)
        if texto is None:
            texto = self.extrair_texto(caminho)
        regras = interpretar_texto(texto)
        if not regras:
            log.warning("PDF '%s' sem conteúdo PROTEGE reconhecível.", caminho.name)
        else:
            log.info("PDF '%s': %d regra(s) PROTEGE extraída(s).", caminho.name, len(regras))
        return regras


__all__ = ["ExtratorProtegePdf", "interpretar_texto"]
