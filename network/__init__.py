"""Central hub of the MedLink hospital network.

Holds the patient index, access policies, audit trail and the federated
query coordinator, plus the per-hospital node endpoints.
"""
