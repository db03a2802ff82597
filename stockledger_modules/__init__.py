"""
Transaction-owning orchestrators.

Each public method of a module service is one atomic business transaction:
it locks the product rows it touches, drives the FIFO cost service, updates
the product, writes the balance ledger, then commits. Any exception rolls the
whole transaction back before it propagates.
"""
