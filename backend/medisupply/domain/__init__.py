# Overview: Pure domain rules (no database access).
