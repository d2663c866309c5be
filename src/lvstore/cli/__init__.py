"""lvstore command-line interface (``lvstore ...``)."""
