"""Module colour names.

Numeric module labels map onto the standard WGCNA colour sequence; label
0 (unassigned) is always ``grey``.
"""

from typing import Dict, Iterable, List, Optional

UNASSIGNED = "grey"

STANDARD_COLORS = [
    "turquoise", "blue", "brown", "yellow", "green", "red", "black", "pink",
    "magenta", "purple", "greenyellow", "tan", "salmon", "cyan", "midnightblue",
    "lightcyan", "grey60", "lightgreen", "lightyellow", "royalblue", "darkred",
    "darkgreen", "darkturquoise", "darkgrey", "orange", "darkorange", "white",
    "skyblue", "saddlebrown", "steelblue", "paleturquoise", "violet",
    "darkolivegreen", "darkmagenta", "sienna3", "yellowgreen", "skyblue3",
    "plum1", "orangered4", "mediumpurple3", "lightsteelblue1", "lightcyan1",
    "ivory", "floralwhite", "darkorange2", "brown4", "bisque4", "darkslateblue",
    "plum2", "thistle2", "thistle1", "salmon4", "palevioletred3", "navajowhite2",
    "maroon", "lightpink4", "lavenderblush3", "honeydew1", "darkseagreen4",
    "coral1", "antiquewhite4", "coral2", "mediumorchid", "skyblue2", "yellow4",
    "skyblue1", "plum", "orangered3", "mediumpurple2", "lightsteelblue",
    "lightcoral", "indianred4", "firebrick4", "darkolivegreen4", "brown2",
    "blue2", "darkviolet", "plum3", "thistle3", "thistle", "darkslategray",
]


def standard_color(label: int) -> str:
    """Colour name for a numeric module label (0 is unassigned)."""
    if label < 0:
        raise ValueError(f"Module labels must be non-negative, got {label}")
    if label == 0:
        return UNASSIGNED
    if label <= len(STANDARD_COLORS):
        return STANDARD_COLORS[label - 1]
    return f"color{label}"


def labels_to_colors(labels: Iterable[int]) -> List[str]:
    return [standard_color(int(lab)) for lab in labels]


def module_names(labels: Iterable[int], prefix: Optional[str] = None) -> Dict[int, str]:
    """Map every distinct label to its module name.

    With ``prefix`` the modules are named ``<prefix>1, <prefix>2, ...`` in
    label order; otherwise they take their colour name.
    """
    names = {}
    for lab in sorted(set(int(x) for x in labels)):
        if lab == 0:
            names[lab] = UNASSIGNED
        elif prefix:
            names[lab] = f"{prefix}{lab}"
        else:
            names[lab] = standard_color(lab)
    return names
