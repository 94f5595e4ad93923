"""Declarative Network Reconciler (DNR).

Backend of a Docker console's network page:
 - reconstruct: render a live network and its containers as an editable YAML document
 - apply: converge the live network toward an edited document

Pipeline: observer -> serializer for reconstruct;
parser/validation -> observer -> planner -> executor -> observer for apply.
"""
