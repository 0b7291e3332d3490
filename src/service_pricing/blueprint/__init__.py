"""Blueprint subpackage - blueprint model, generators and the override layer."""
