# validacao.py

from __future__ import annotations
from typing import Iterable, List, Optional, Set
import re
import logging

from modelos import DadosEmpresa, DadosFiscais, ResultadoValidacao, Severidade
from regras_fiscais import TabelasTributarias, carregar_tabelas
from seguranca import mascarar_documento_fiscal

log = logging.getLogger("ingestor_fiscal.validacao")
if not log.handlers:
    _h = logging.StreamHandler()
    _h.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    log.addHandler(_h)
    log.setLevel(logging.INFO)

# --------------------------------------------------------------------
# Auxiliares determinísticos
# --------------------------------------------------------------------
_CFOP_RE = re.compile(r"\d{4}")
_CST_RE = re.compile(r"\d{2,3}")
_NCM_RE = re.compile(r"\d{8}")

def _only_digits(s: Optional[object]) -> str:
    return re.sub(r"\D+", "", str(s)) if s else ""

_PESOS_CNPJ = (6, 5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2)

def _dv_mod11(base: str, pesos) -> int:
    """Dígito verificador módulo 11 (resto < 2 vale 0)."""
    resto = sum(int(d) * p for d, p in zip(base, pesos)) % 11
    return 0 if resto < 2 else 11 - resto

def _repetido(c: str) -> bool:
    return c == c[0] * len(c)

def valida_cnpj(cnpj: Optional[str]) -> bool:
    c = _only_digits(cnpj)
    if len(c) != 14 or _repetido(c):
        return False
    dv1 = _dv_mod11(c[:12], _PESOS_CNPJ[1:])
    dv2 = _dv_mod11(c[:12] + str(dv1), _PESOS_CNPJ)
    return c[12:] == f"{dv1}{dv2}"

def valida_cpf(cpf: Optional[str]) -> bool:
    c = _only_digits(cpf)
    if len(c) != 11 or _repetido(c):
        return False
    dv1 = _dv_mod11(c[:9], range(10, 1, -1))
    dv2 = _dv_mod11(c[:9] + str(dv1), range(11, 1, -1))
    return c[9:] == f"{dv1}{dv2}"

def valida_cfop(cfop: Optional[str]) -> bool:
    return bool(_CFOP_RE.fullmatch((cfop or "").strip()))

def valida_cst(cst: Optional[str]) -> bool:
    return bool(_CST_RE.fullmatch((cst or "").strip()))

def valida_ncm(ncm: Optional[str]) -> bool:
    return bool(_NCM_RE.fullmatch((ncm or "").strip()))

def valida_ie(ie: Optional[str]) -> bool:
    """Checagem apenas de tamanho: a regra de dígito varia por UF."""
    return 8 <= len(_only_digits(ie)) <= 12

def possui_erros(resultados: Iterable[ResultadoValidacao]) -> bool:
    return any(r.severidade == Severidade.ERROR for r in resultados)

# --------------------------------------------------------------------
# Validador semântico
# --------------------------------------------------------------------
class ValidadorFiscal:
    """
    Validação semântica do documento já normalizado.

    A ordem de emissão é fixa: cnpj, ie, cfop_i (todas as operações),
    cst_i (todas as operações), ncm_i (produtos com NCM), uf e, por fim,
    beneficio_i quando as tabelas tributárias indicam benefício de ICMS
    para o NCM na UF da empresa. Todas as verificações rodam; nenhuma
    interrompe as seguintes.
    """

    UFS_VALIDAS: Set[str] = {
        "AC","AL","AP","AM","BA","CE","DF","ES","GO","MA","MT","MS","MG","PA","PB","PR","PE",
        "PI","RJ","RN","RS","RO","RR","SC","SP","SE","TO"
    }

    def __init__(self, tabelas: Optional[TabelasTributarias] = None):
        self.tabelas = tabelas or carregar_tabelas()

    # --------------------------- API pública ---------------------------

    def validar(self, empresa: DadosEmpresa, fiscal: DadosFiscais) -> List[ResultadoValidacao]:
        resultados: List[ResultadoValidacao] = []

        def _check(ok: bool, campo: str, msg_ok: str, msg_erro: str, severidade_erro: Severidade) -> None:
            resultados.append(ResultadoValidacao(
                campo=campo,
                valido=ok,
                mensagem=msg_ok if ok else msg_erro,
                severidade=Severidade.INFO if ok else severidade_erro,
            ))

        # 1) Identificadores
        if empresa.cnpj:
            _check(valida_cnpj(empresa.cnpj), "cnpj", "CNPJ válido", "CNPJ inválido", Severidade.ERROR)
        if empresa.ie:
            _check(valida_ie(empresa.ie), "ie", "IE válida", "IE inválida (esperado 8 a 12 dígitos)", Severidade.WARNING)

        # 2) Códigos por operação
        for i, op in enumerate(fiscal.operacoes):
            _check(valida_cfop(op.cfop), f"cfop_{i}",
                   f"CFOP {op.cfop} válido", f"CFOP '{op.cfop}' inválido (esperado 4 dígitos)", Severidade.ERROR)
        for i, op in enumerate(fiscal.operacoes):
            _check(valida_cst(op.cst), f"cst_{i}",
                   f"CST {op.cst} válido", f"CST '{op.cst}' inválido (esperado 2 ou 3 dígitos)", Severidade.ERROR)

        # 3) NCM por produto (apenas quando informado)
        for i, prod in enumerate(fiscal.produtos):
            if prod.ncm:
                _check(valida_ncm(prod.ncm), f"ncm_{i}",
                       f"NCM {prod.ncm} válido", f"NCM '{prod.ncm}' inválido (esperado 8 dígitos)", Severidade.WARNING)

        # 4) Localidade e benefícios (tabelas tributárias)
        uf = (empresa.endereco.uf if empresa.endereco else "").strip().upper()
        if uf:
            _check(uf in self.UFS_VALIDAS, "uf", f"UF {uf} válida", f"UF '{uf}' inválida", Severidade.WARNING)
            if uf in self.UFS_VALIDAS:
                resultados.extend(self._beneficios(uf, fiscal))

        n_erros = sum(1 for r in resultados if r.severidade == Severidade.ERROR)
        log.info("Validação semântica (cnpj=%s): %d resultados, %d erros.",
                 mascarar_documento_fiscal(empresa.cnpj), len(resultados), n_erros)
        return resultados

    # --------------------------- Internos ----------------------------

    def _beneficios(self, uf: str, fiscal: DadosFiscais) -> List[ResultadoValidacao]:
        achados: List[ResultadoValidacao] = []
        for i, prod in enumerate(fiscal.produtos):
            if not valida_ncm(prod.ncm):
                continue
            partes = []
            reducao = self.tabelas.reducao_base_icms(uf, prod.ncm)
            if reducao:
                partes.append(f"redução de base {reducao:g}%")
            outorgado = self.tabelas.credito_outorgado_icms(uf, prod.ncm)
            if outorgado:
                partes.append(f"crédito outorgado {outorgado:g}%")
            protege = self.tabelas.percentual_protege(uf, prod.ncm)
            if protege:
                partes.append(f"Protege {protege:g}%")
            if partes:
                achados.append(ResultadoValidacao(
                    campo=f"beneficio_{i}",
                    valido=True,
                    mensagem=f"NCM {prod.ncm} em {uf}: " + ", ".join(partes),
                    severidade=Severidade.INFO,
                ))
        return achados


__all__ = [
    "valida_cnpj", "valida_cpf", "valida_cfop", "valida_cst", "valida_ncm", "valida_ie",
    "possui_erros", "ValidadorFiscal",
]
