"""Protocol-specific gateways."""
