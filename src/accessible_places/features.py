"""
Accessibility feature tables
Static lookups keyed by the short feature keys and the legacy Portuguese keys
stored on older location documents.
"""
from types import MappingProxyType

FEATURE_LABELS = MappingProxyType({
    "wheelchair": "Cadeirante",
    "blind": "Def. Visual",
    "deaf": "Def. Auditiva",
    "elevator": "Elevador",
    "parking": "Estacionamento",
    "restroom": "Banheiro Adapt.",
    "ramp": "Rampa",
    "Acessível para cadeirantes": "Cadeirante",
    "Piso tátil": "Piso Tátil",
    "Rampa de acesso": "Rampa",
    "Banheiro acessível": "Banheiro Adapt.",
    "Vaga PCD": "Vaga PCD",
    "Atendimento prioritário": "Atend. Prioritário",
    "Cão-guia permitido": "Cão-guia",
    "Sinalização em braile": "Braile",
})

FEATURE_EXPLANATIONS = MappingProxyType({
    "wheelchair": "Acessível para cadeirantes: rampas, portas largas e circulação livre.",
    "blind": "Acessível para deficientes visuais: sinalização tátil, braile, piso tátil.",
    "deaf": "Acessível para deficientes auditivos: sinalização visual, intérprete de Libras.",
    "elevator": "Elevador disponível para acesso entre andares.",
    "parking": "Vaga reservada para pessoas com deficiência.",
    "restroom": "Banheiro adaptado: barras de apoio, espaço para cadeira de rodas.",
    "ramp": "Rampa de acesso para cadeirantes.",
    "Acessível para cadeirantes": "Acessível para cadeirantes: rampas, portas largas e circulação livre.",
    "Piso tátil": "Piso tátil para orientação de deficientes visuais.",
    "Rampa de acesso": "Rampa de acesso para cadeirantes.",
    "Banheiro acessível": "Banheiro adaptado: barras de apoio, espaço para cadeira de rodas.",
    "Vaga PCD": "Vaga reservada para pessoas com deficiência.",
    "Atendimento prioritário": "Atendimento prioritário para pessoas com deficiência.",
    "Cão-guia permitido": "Cão-guia permitido no local.",
    "Sinalização em braile": "Sinalização em braile para deficientes visuais.",
})


def feature_label(key: str) -> str:
    return FEATURE_LABELS.get(key, key)


def feature_explanation(key: str) -> str:
    return FEATURE_EXPLANATIONS.get(key, "")
