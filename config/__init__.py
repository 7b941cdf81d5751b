"""Migration Verifier configuration"""
