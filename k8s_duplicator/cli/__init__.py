"""
CLI command modules, registered on the group in ``k8s_duplicator.main``.
"""
