"""BlueCarbon Ledger - Registry Backend"""
