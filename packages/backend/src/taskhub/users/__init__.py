"""Internal user service — sessions, accounts and roles.

Reachable only through the gateway; trusts the propagation envelope.
"""
