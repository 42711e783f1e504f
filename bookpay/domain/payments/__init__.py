"""Payments domain - Fees, gateway adapters, transaction lifecycle and reconciliation"""
