"""Modelos y vocabularios de dominio.

Estructuras de datos puras y estrictas (Pydantic v2 y enums). El dominio no
sabe nada de subprocesos, de la CLI ni del layout en disco.
"""
