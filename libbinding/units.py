# Display-only concentration units. Fitting always runs in the units of the input table.
CONC_TO_MOLAR = {
    "M": 1.0,
    "mM": 1e-3,
    "μM": 1e-6,
    "nM": 1e-9,
    "pM": 1e-12
}

def get_conversion_factor(conc_unit: str):
    if conc_unit not in CONC_TO_MOLAR:
        raise KeyError(f"Unknown concentration unit '{conc_unit}'. Choose from {list(CONC_TO_MOLAR)}.")
    return CONC_TO_MOLAR[conc_unit]

def convert_concentration(value, from_unit, to_unit):
    """c_to = c_from * (factor_from / factor_to)"""
    return value * (get_conversion_factor(from_unit) / get_conversion_factor(to_unit))

def format_concentration(value, unit, digits=4):
    return f"{value:.{digits}g} {unit}"
