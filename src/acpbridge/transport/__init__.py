"""Transport layer: the ACP agent served over stdio."""
