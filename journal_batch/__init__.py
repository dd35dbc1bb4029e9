"""
journal_batch -- bulk journal operations and recurring entry generation.

Built on journal_kernel services; every operation runs inside the caller's
transaction with SAVEPOINT isolation per item or per template.
"""
