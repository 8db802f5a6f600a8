"""Service names, banner capture and report output"""
