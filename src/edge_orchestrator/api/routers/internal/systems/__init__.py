# Dummy provisioning systems (databases, secrets, workers).
