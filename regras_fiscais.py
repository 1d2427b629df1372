# regras_fiscais.py
"""
Tabelas tributárias de referência (ICMS por UF, benefícios por NCM,
PIS/COFINS federais). Carregadas uma vez por processo a partir do YAML e
expostas somente para leitura; podem ser lidas por várias threads sem lock.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional
import logging
import os
import re

import yaml

log = logging.getLogger("ingestor_fiscal.regras")
if not log.handlers:
    _h = logging.StreamHandler()
    _h.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    log.addHandler(_h)
    log.setLevel(logging.INFO)

REGRAS_FISCAIS_PATH = Path(os.getenv("REGRAS_FISCAIS_PATH") or Path(__file__).with_name("regras_fiscais.yaml"))

_VAZIO: Mapping[str, float] = MappingProxyType({})


def _prefixo_ncm(ncm: Optional[str]) -> str:
    return re.sub(r"\D+", "", ncm or "")[:4]


def _tabela_ncm(bruto: Any) -> Mapping[str, float]:
    if not isinstance(bruto, dict):
        return _VAZIO
    return MappingProxyType({str(k).zfill(4): float(v) for k, v in bruto.items()})


@dataclass(frozen=True)
class RegraIcmsEstado:
    uf: str
    aliquota_interna: float
    aliquota_interestadual: float
    reducao_padrao: float = 0.0
    outorgado_padrao: float = 0.0
    reducoes_ncm: Mapping[str, float] = field(default_factory=lambda: _VAZIO)
    creditos_outorgados: Mapping[str, float] = field(default_factory=lambda: _VAZIO)
    protege_goias: Mapping[str, float] = field(default_factory=lambda: _VAZIO)


@dataclass(frozen=True)
class RegraFederal:
    tributo: str
    aliquota_nao_cumulativa: float
    aliquota_cumulativa: float
    credito_presumido_padrao: float = 0.0
    creditos_presumidos: Mapping[str, float] = field(default_factory=lambda: _VAZIO)


_PADRAO_ICMS = RegraIcmsEstado(uf="", aliquota_interna=18.0, aliquota_interestadual=7.0)


@dataclass(frozen=True)
class TabelasTributarias:
    versao: str = ""
    icms_padrao: RegraIcmsEstado = _PADRAO_ICMS
    estados: Mapping[str, RegraIcmsEstado] = field(default_factory=lambda: MappingProxyType({}))
    federal: Mapping[str, RegraFederal] = field(default_factory=lambda: MappingProxyType({}))

    # ---------------- ICMS ----------------
    def regra_icms(self, uf: Optional[str]) -> RegraIcmsEstado:
        return self.estados.get((uf or "").strip().upper(), self.icms_padrao)

    def reducao_base_icms(self, uf: Optional[str], ncm: Optional[str]) -> float:
        regra = self.regra_icms(uf)
        return regra.reducoes_ncm.get(_prefixo_ncm(ncm), regra.reducao_padrao)

    def credito_outorgado_icms(self, uf: Optional[str], ncm: Optional[str]) -> float:
        regra = self.regra_icms(uf)
        return regra.creditos_outorgados.get(_prefixo_ncm(ncm), regra.outorgado_padrao)

    def percentual_protege(self, uf: Optional[str], ncm: Optional[str]) -> float:
        return self.regra_icms(uf).protege_goias.get(_prefixo_ncm(ncm), 0.0)

    # ---------------- Federais ----------------
    def aliquota_federal(self, tributo: str, cumulativo: bool = False) -> float:
        regra = self.federal.get(tributo.strip().upper())
        if regra is None:
            raise KeyError(f"Tributo federal sem tabela: {tributo}")
        return regra.aliquota_cumulativa if cumulativo else regra.aliquota_nao_cumulativa

    def credito_presumido(self, tributo: str, ncm: Optional[str]) -> float:
        regra = self.federal.get(tributo.strip().upper())
        if regra is None:
            return 0.0
        return regra.creditos_presumidos.get(_prefixo_ncm(ncm), regra.credito_presumido_padrao)


def _montar_tabelas(dados: Dict[str, Any]) -> TabelasTributarias:
    icms = dados.get("icms") or {}
    padrao_cfg = icms.get("padrao") or {}
    padrao = RegraIcmsEstado(
        uf="",
        aliquota_interna=float(padrao_cfg.get("aliquota_interna", 18)),
        aliquota_interestadual=float(padrao_cfg.get("aliquota_interestadual", 7)),
        reducao_padrao=float(padrao_cfg.get("reducao_padrao", 0)),
        outorgado_padrao=float(padrao_cfg.get("outorgado_padrao", 0)),
    )

    estados: Dict[str, RegraIcmsEstado] = {}
    for uf, cfg in (icms.get("estados") or {}).items():
        cfg = cfg or {}
        estados[str(uf).upper()] = RegraIcmsEstado(
            uf=str(uf).upper(),
            aliquota_interna=float(cfg.get("aliquota_interna", padrao.aliquota_interna)),
            aliquota_interestadual=float(cfg.get("aliquota_interestadual", padrao.aliquota_interestadual)),
            reducao_padrao=float(cfg.get("reducao_padrao", padrao.reducao_padrao)),
            outorgado_padrao=float(cfg.get("outorgado_padrao", padrao.outorgado_padrao)),
            reducoes_ncm=_tabela_ncm(cfg.get("reducoes_ncm")),
            creditos_outorgados=_tabela_ncm(cfg.get("creditos_outorgados")),
            protege_goias=_tabela_ncm(cfg.get("protege_goias")),
        )

    federal: Dict[str, RegraFederal] = {}
    for tributo, cfg in (dados.get("federal") or {}).items():
        cfg = cfg or {}
        federal[str(tributo).upper()] = RegraFederal(
            tributo=str(tributo).upper(),
            aliquota_nao_cumulativa=float(cfg.get("aliquota_nao_cumulativa", 0)),
            aliquota_cumulativa=float(cfg.get("aliquota_cumulativa", 0)),
            credito_presumido_padrao=float(cfg.get("credito_presumido_padrao", 0)),
            creditos_presumidos=_tabela_ncm(cfg.get("creditos_presumidos")),
        )

    return TabelasTributarias(
        versao=str(dados.get("versao") or ""),
        icms_padrao=padrao,
        estados=MappingProxyType(estados),
        federal=MappingProxyType(federal),
    )


@lru_cache(maxsize=4)
def carregar_tabelas(path: Path = REGRAS_FISCAIS_PATH) -> TabelasTributarias:
    path = Path(path)
    if not path.exists():
        log.warning(f"Regras fiscais '{path}' não encontradas. Usando defaults.")
        return TabelasTributarias()
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        log.error(f"Falha ao carregar regras '{path}': {e}. Usando defaults.")
        return TabelasTributarias()
    if not isinstance(data, dict):
        log.error(f"Regras '{path}' sem estrutura de mapeamento. Usando defaults.")
        return TabelasTributarias()
    tabelas = _montar_tabelas(data)
    log.info(f"Regras fiscais carregadas de '{path}' (versão {tabelas.versao or '?'}, {len(tabelas.estados)} UFs).")
    return tabelas


# ---------------- Atalhos sobre as tabelas padrão ----------------

def regra_icms(uf: Optional[str]) -> RegraIcmsEstado:
    return carregar_tabelas().regra_icms(uf)

def reducao_base_icms(uf: Optional[str], ncm: Optional[str]) -> float:
    return carregar_tabelas().reducao_base_icms(uf, ncm)

def credito_outorgado_icms(uf: Optional[str], ncm: Optional[str]) -> float:
    return carregar_tabelas().credito_outorgado_icms(uf, ncm)

def percentual_protege(uf: Optional[str], ncm: Optional[str]) -> float:
    return carregar_tabelas().percentual_protege(uf, ncm)

def aliquota_federal(tributo: str, cumulativo: bool = False) -> float:
    return carregar_tabelas().aliquota_federal(tributo, cumulativo)

def credito_presumido(tributo: str, ncm: Optional[str]) -> float:
    return carregar_tabelas().credito_presumido(tributo, ncm)


__all__ = [
    "REGRAS_FISCAIS_PATH", "RegraIcmsEstado", "RegraFederal", "TabelasTributarias",
    "carregar_tabelas", "regra_icms", "reducao_base_icms", "credito_outorgado_icms",
    "percentual_protege", "aliquota_federal", "credito_presumido",
]
