# Overview: Thin persistence layer performing atomic conditional writes.
