"""Operator-facing status strings.

Everything a checkpoint operator reads comes from here, keyed by the
verdict/result code, so no raw exception text reaches the screen.
"""

from __future__ import annotations

QUALITY_REASONS: dict[str, str] = {
    "OK": "Calidad óptima",
    "NO_FACE": "No se detecta rostro",
    "DISTANCE_TOO_FAR": "Acércate más a la cámara",
    "DISTANCE_TOO_CLOSE": "Aléjate un poco",
    "OFF_CENTER": "Centra tu rostro en la cámara",
}

UNKNOWN_FACE = "Desconocido"
RECOGNIZED = "Identificado"
SCANNING = "Escaneando..."
RECOGNIZING = "Reconociendo..."
ENGINE_UNAVAILABLE = "No se pudieron cargar los modelos de IA"
INTERNAL_ERROR = "Error interno, avisa al administrador"


def already_registered(display_name: str) -> str:
    return f"Ya registrado como {display_name}"
