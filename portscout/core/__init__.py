"""Scan engine: models, scheduling, target resolution and reporting"""
