"""
Transformer App - Phase 2: Section-Tree Extraction

Responsibilities:
- Walk downloaded artifacts in CID order
- Parse PUG-View documents into typed section trees
- Extract fixed profiles (molecular, solubility, absorption) by heading taxonomy
- Skip compounds without relevant data (not an error)
- Hand records to the saver's batch sink

Outputs:
- Store collections: molecular, filter_smiles_solubility, filter_absorption
"""
