"""Packaged metadata queries, one directory per vendor plus `generic`."""
