"""
Contact Importer.

Maps spreadsheet columns onto contact attributes with an LLM classifier and
imports deduplicated contact records.
"""
