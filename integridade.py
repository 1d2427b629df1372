# integridade.py
"""
Validação de integridade de arquivos antes do parsing semântico.

Etapas (na ordem): existência/tamanho, SHA-256 em streaming, checagem por
tipo (assinatura, limites, estrutura mínima), varredura de conteúdo e
checagens estruturais. Erros tornam o relatório inválido; avisos não.
As leituras são limitadas a blocos, nunca ao arquivo inteiro em memória.
"""

from __future__ import annotations
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union
import logging
import os
import re

from erros import IntegrityError
from modelos import MetadadosIntegridade, RelatorioIntegridade, TipoArquivo
from seguranca import TAMANHO_BLOCO, sha256_path

log = logging.getLogger("ingestor_fiscal.integridade")
if not log.handlers:
    _h = logging.StreamHandler()
    _h.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    log.addHandler(_h)
    log.setLevel(logging.INFO)

_MB = 1024 * 1024

EXTENSOES_TIPO: Dict[str, TipoArquivo] = {
    ".xml": TipoArquivo.XML,
    ".txt": TipoArquivo.SPED,
    ".pdf": TipoArquivo.PDF,
    ".xlsx": TipoArquivo.PLANILHA,
    ".xls": TipoArquivo.PLANILHA,
}

_RAIZ_XML_RE = re.compile(
    rb"<(?:\w+:)?(?:nfeProc|NFe|cteProc|CTe|mdfeProc|MDFe|CompNfse|Nfse|ListaNfse|ConsultarNfseResposta)\b"
)
_TAGS_FISCAIS_XML_RE = re.compile(rb"<(?:\w+:)?(?:infNFe|infCte|infMDFe|InfNfse)\b")
_ENCODING_RE = re.compile(rb"<\?xml[^>]*encoding=[\"']([^\"']+)[\"']", re.I)
_ABRE_NFEPROC_RE = re.compile(rb"<(?:\w+:)?nfeProc\b")
_FECHA_NFEPROC_RE = re.compile(rb"</(?:\w+:)?nfeProc\s*>")

_CABECALHOS_SPED = (b"|0000|", b"|0001|", b"|0005|")
_REGISTROS_FISCAIS_SPED = (b"|C100|", b"|C170|", b"|C190|", b"|D100|", b"|D190|")
_TOTALIZADORES_SPED = (b"|C990|", b"|D990|", b"|9990|", b"|9999|")

_ASSINATURA_PDF = b"%PDF-"
_ASSINATURAS_PLANILHA = (b"PK\x03\x04", b"PK\x05\x06", b"\xD0\xCF\x11\xE0")

_CNPJ_RE = re.compile(r"\d{2}\.\d{3}\.\d{3}/\d{4}-\d{2}|(?<!\d)\d{14}(?!\d)")
_DATA_RE = re.compile(r"\d{2}/\d{2}/\d{4}|\d{4}-\d{2}-\d{2}")
_MOEDA_RE = re.compile(r"R\$\s*\d+[.,]\d{2}")

TOLERANCIA_TAGS = 5
MAX_DATAS = 5


class ValidadorIntegridade:
    MAX_MB: float = float(os.getenv("INTEGRIDADE_MAX_MB", "100"))
    XML_MAX_MB: float = float(os.getenv("INTEGRIDADE_XML_MAX_MB", "10"))
    SPED_MAX_MB: float = float(os.getenv("INTEGRIDADE_SPED_MAX_MB", "50"))
    PDF_MAX_MB: float = float(os.getenv("INTEGRIDADE_PDF_MAX_MB", "20"))
    PLANILHA_MAX_MB: float = float(os.getenv("INTEGRIDADE_PLANILHA_MAX_MB", "15"))
    FRACAO_LINHAS_INVALIDAS: float = float(os.getenv("INTEGRIDADE_FRACAO_LINHAS_INVALIDAS", "0.05"))

    def __init__(self, max_mb: Optional[float] = None, limites_mb: Optional[Dict[TipoArquivo, float]] = None):
        self.max_mb = self.MAX_MB if max_mb is None else max_mb
        self.limites_mb: Dict[TipoArquivo, float] = {
            TipoArquivo.XML: self.XML_MAX_MB,
            TipoArquivo.SPED: self.SPED_MAX_MB,
            TipoArquivo.PDF: self.PDF_MAX_MB,
            TipoArquivo.PLANILHA: self.PLANILHA_MAX_MB,
        }
        if limites_mb:
            self.limites_mb.update(limites_mb)

    # --------------------------- API pública ---------------------------

    def validar(self, caminho: Union[str, Path]) -> RelatorioIntegridade:
        p = Path(caminho)
        extensao = p.suffix.lower()
        tipo = EXTENSOES_TIPO.get(extensao)

        if not p.is_file():
            return self._relatorio(["Não é um arquivo válido"], [], "", MetadadosIntegridade(extensao=extensao, tipo_arquivo=tipo))

        tamanho = p.stat().st_size
        meta_base = MetadadosIntegridade(tamanho=tamanho, tipo_arquivo=tipo, extensao=extensao)
        if tamanho == 0:
            return self._relatorio(["Arquivo vazio"], [], "", meta_base)
        if tamanho > self.max_mb * _MB:
            return self._relatorio([f"Arquivo muito grande (máximo {self.max_mb:g}MB)"], [], "", meta_base)

        checksum = sha256_path(p)
        erros: List[str] = []
        avisos: List[str] = []

        cabeca, cauda = self._amostras(p, tamanho)

        if tipo is None:
            avisos.append(f"Tipo de arquivo não validado: {extensao or '(sem extensão)'}")
        else:
            limite = self.limites_mb[tipo]
            if tamanho > limite * _MB:
                erros.append(f"{self._rotulo(tipo)} muito grande (máximo {limite:g}MB)")
            if tipo == TipoArquivo.XML:
                self._checar_xml(p, cabeca, cauda, erros, avisos)
            elif tipo == TipoArquivo.SPED:
                self._checar_sped(p, cabeca, cauda, erros, avisos)
            elif tipo == TipoArquivo.PDF:
                if not cabeca.startswith(_ASSINATURA_PDF):
                    erros.append("Arquivo não parece ser um PDF válido")
            elif tipo == TipoArquivo.PLANILHA:
                if not cabeca.startswith(_ASSINATURAS_PLANILHA):
                    erros.append("Arquivo não parece ser um Excel válido")

        # Varredura de conteúdo apenas em formatos textuais
        cnpj: Optional[str] = None
        datas: Tuple[str, ...] = ()
        moeda = False
        if tipo in (None, TipoArquivo.XML, TipoArquivo.SPED):
            texto = cabeca.decode("utf-8", errors="ignore")
            m = _CNPJ_RE.search(texto)
            cnpj = m.group(0) if m else None
            datas = tuple(_DATA_RE.findall(texto)[:MAX_DATAS])
            moeda = bool(_MOEDA_RE.search(texto))
            if cnpj is None:
                avisos.append("Nenhum CNPJ encontrado no arquivo")

        meta = MetadadosIntegridade(
            tamanho=tamanho, tipo_arquivo=tipo, extensao=extensao,
            cnpj=cnpj, datas=datas, valores_monetarios=moeda,
        )
        relatorio = self._relatorio(erros, avisos, checksum, meta)
        log.info("Integridade de '%s': valido=%s, %d erros, %d avisos.",
                 p.name, relatorio.valido, len(erros), len(avisos))
        return relatorio

    # --------------------------- Internos ----------------------------

    @staticmethod
    def _relatorio(erros: List[str], avisos: List[str], checksum: str, meta: MetadadosIntegridade) -> RelatorioIntegridade:
        return RelatorioIntegridade(
            valido=not erros, checksum=checksum,
            erros=tuple(erros), avisos=tuple(avisos), metadados=meta,
        )

    @staticmethod
    def _rotulo(tipo: TipoArquivo) -> str:
        return {
            TipoArquivo.XML: "XML", TipoArquivo.SPED: "SPED",
            TipoArquivo.PDF: "PDF", TipoArquivo.PLANILHA: "Planilha",
        }[tipo]

    @staticmethod
    def _amostras(p: Path, tamanho: int) -> Tuple[bytes, bytes]:
        with open(p, "rb") as f:
            cabeca = f.read(TAMANHO_BLOCO)
            if tamanho <= TAMANHO_BLOCO:
                return cabeca, cabeca
            f.seek(max(0, tamanho - TAMANHO_BLOCO))
            cauda = f.read(TAMANHO_BLOCO)
        return cabeca, cauda

    def _checar_xml(self, p: Path, cabeca: bytes, cauda: bytes, erros: List[str], avisos: List[str]) -> None:
        sem_declaracao = b"<?xml" not in cabeca[:1024]
        if sem_declaracao and not _RAIZ_XML_RE.search(cabeca):
            erros.append("Arquivo não parece ser um XML válido")
            return
        if not _TAGS_FISCAIS_XML_RE.search(cabeca):
            avisos.append("XML não contém tags típicas de NFe")
        m = _ENCODING_RE.search(cabeca[:1024])
        if m and m.group(1).decode("ascii", errors="ignore").lower().replace("-", "") != "utf8":
            avisos.append(f"Encoding diferente do esperado (UTF-8): {m.group(1).decode('ascii', errors='ignore')}")

        abre = fecha = 0
        with open(p, "rb") as f:
            for bloco in iter(lambda: f.read(TAMANHO_BLOCO), b""):
                abre += bloco.count(b"<")
                fecha += bloco.count(b">")
        if abs(abre - fecha) > TOLERANCIA_TAGS:
            avisos.append("Possível desbalanceamento de tags XML")
        if _ABRE_NFEPROC_RE.search(cabeca) and not _FECHA_NFEPROC_RE.search(cauda):
            avisos.append("XML pode estar incompleto (falta fechamento)")

    def _checar_sped(self, p: Path, cabeca: bytes, cauda: bytes, erros: List[str], avisos: List[str]) -> None:
        if not any(c in cabeca for c in _CABECALHOS_SPED):
            erros.append("Arquivo não parece ser um SPED válido")
            return

        linhas = nao_vazias = invalidas = 0
        tem_dados_fiscais = False
        with open(p, "rb") as f:
            for linha in f:
                linhas += 1
                linha = linha.strip()
                if not linha:
                    continue
                nao_vazias += 1
                if not linha.startswith(b"|"):
                    invalidas += 1
                elif not tem_dados_fiscais and linha.startswith(_REGISTROS_FISCAIS_SPED):
                    tem_dados_fiscais = True

        if linhas < 10:
            avisos.append("SPED com poucas linhas, pode estar incompleto")
        if not tem_dados_fiscais:
            avisos.append("SPED não contém dados fiscais típicos")
        if nao_vazias and invalidas / nao_vazias > self.FRACAO_LINHAS_INVALIDAS:
            avisos.append(f"{invalidas} linhas não seguem o formato SPED")
        if not any(t in cauda for t in _TOTALIZADORES_SPED):
            avisos.append("SPED pode estar incompleto (falta totalizadores)")


def exigir_valido(relatorio: RelatorioIntegridade) -> RelatorioIntegridade:
    if not relatorio.valido:
        raise IntegrityError(relatorio)
    return relatorio


__all__ = ["EXTENSOES_TIPO", "ValidadorIntegridade", "exigir_valido"]
