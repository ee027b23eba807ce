"""Resource types, selectors and registry for the SOPS Operator."""
