"""Address derivation, invocation assembly and transport for the drift_client program."""
