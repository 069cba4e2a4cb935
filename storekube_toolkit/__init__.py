"""Provisioning toolkit for store edge clusters."""
