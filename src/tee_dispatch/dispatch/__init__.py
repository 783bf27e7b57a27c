"""Order negotiation and task tracking for confidential marketplace jobs.

Why hand-written orchestration instead of a workflow engine?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
One job is a short, strictly sequential chain (resolve framework, provision
secret, select workerpool, build and sign orders, match, monitor). What needs
care is not scheduling but the marketplace rules around it:

- Tag and category compatibility between four independently signed orders.
- Tiered workerpool selection with a blacklist and a pinned preference that
  must stay deterministic for a fixed order-book snapshot.
- A monitor that tells "not indexed yet" from transient fetch errors, backs
  off on the latter, and notices deal-deadline expiry before the ledger does.

Each collaborator is a small async protocol (see ``ports``), so the same
pipeline runs against the live marketplace or the in-memory sandbox.
"""
