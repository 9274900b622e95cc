"""Pure domain core: values, records, budget arithmetic and eligibility rules."""
