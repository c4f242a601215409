from __future__ import annotations
from typing import List, Optional
from .timeline import RenderWarning

UNRESOLVED_REFERENCE = "UnresolvedReference"
DEGENERATE_SEGMENT = "DegenerateSegment"
RANGE_CLIP = "RangeClip"
NO_MATCHING_PART = "NoMatchingPart"
INVALID_PARAMETER = "InvalidParameter"

class RenderError(Exception):
    """Basisklasse der fatalen Fehler."""

class StructuralInputError(RenderError):
    """Fehlerhaftes Eingabedokument (fehlendes Pflichtattribut, nicht-numerischer Wert, falsche Wurzel)."""

    def __init__(self, message: str, element: Optional[str] = None, attribute: Optional[str] = None):
        self.element = element
        self.attribute = attribute
        where = ""
        if element:
            where = f"<{element}>" + (f"@{attribute}" if attribute else "")
        super().__init__(f"{where}: {message}" if where else message)

class UnknownPerformanceError(RenderError):
    """Das Dokument enthält keine Performance mit dem gewünschten Namen."""

class InternalError(RenderError):
    """Verletzte Invariante im Renderer."""

class Diagnostics:
    """
    Sammelt die behebbaren Fehler eines Rendering-Durchlaufs.
    Gleicher Schlüssel (kind, map, date, name) wird nur einmal aufgenommen.
    """

    def __init__(self):
        self.warnings: List[RenderWarning] = []
        self._seen = set()

    def warn(self, kind: str, message: str, map_kind: Optional[str] = None,
             date: Optional[float] = None, name: Optional[str] = None) -> RenderWarning:
        w = RenderWarning(kind=kind, map_kind=map_kind, date=date, name=name, message=message)
        if w.key() not in self._seen:
            self._seen.add(w.key())
            self.warnings.append(w)
        return w

    def unresolved(self, map_kind: str, date: float, name: str, what: str = "style/definition"):
        return self.warn(UNRESOLVED_REFERENCE, f"{what} '{name}' not found, instruction skipped",
                         map_kind=map_kind, date=date, name=name)

    def of_kind(self, kind: str) -> List[RenderWarning]:
        return [w for w in self.warnings if w.kind == kind]

    def __len__(self):
        return len(self.warnings)
