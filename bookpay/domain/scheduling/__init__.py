"""Scheduling domain - Service availability, slot conflicts and public slot listing"""
