"""Flask web layer: mock IdP endpoints and the browser tester."""
