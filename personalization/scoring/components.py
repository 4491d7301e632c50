import re
from typing import Dict, List, Optional, Tuple

from personalization.models import Product

# component type -> category keywords matched against product/category names
COMPONENT_CATEGORY_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "cpu": ("CPU", "Processor"),
    "gpu": ("GPU", "VGA", "Graphics Card", "Video Card"),
    "motherboard": ("Motherboard", "Mainboard", "Mobo"),
    "ram": ("RAM", "Memory"),
    "storage": ("Storage", "SSD", "HDD", "NVMe"),
    "psu": ("PSU", "Power Supply"),
    "case": ("Case", "Chassis", "Computer Case"),
    "cooler": ("Cooler", "CPU Cooler", "AIO", "Air Cooler"),
    "monitor": ("Monitor", "Display"),
    "keyboard": ("Keyboard",),
    "mouse": ("Mouse",),
    "headset": ("Headset", "Headphone"),
}

_PATTERNS = {
    component: re.compile(
        r"\b(" + "|".join(re.escape(k.lower()) for k in keywords) + r")\b"
    )
    for component, keywords in COMPONENT_CATEGORY_KEYWORDS.items()
}


def known_component_types() -> List[str]:
    return sorted(COMPONENT_CATEGORY_KEYWORDS)


def matches_component_type(product: Product, component_type: Optional[str]) -> bool:
    """Unknown or missing component types match everything."""
    if not component_type:
        return True
    pattern = _PATTERNS.get(component_type.strip().lower())
    if pattern is None:
        return True
    haystack = f"{product.name} {product.category_name or ''}".lower()
    return pattern.search(haystack) is not None


def component_type_of(product: Product) -> Optional[str]:
    """
    Component type a product belongs to, judged by its category first and
    its name second.

    The longest matching keyword wins, so a "CPU Cooler" category is a
    cooler rather than a cpu.
    """
    for text in (product.category_name, product.name):
        if not text:
            continue
        text = text.lower()
        best, best_length = None, 0
        for component, keywords in COMPONENT_CATEGORY_KEYWORDS.items():
            for keyword in keywords:
                if len(keyword) <= best_length:
                    continue
                if re.search(r"\b" + re.escape(keyword.lower()) + r"\b", text):
                    best, best_length = component, len(keyword)
        if best is not None:
            return best
    return None
