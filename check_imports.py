import importlib
modules = [
    'tagexplorer.models',
    'tagexplorer.lib.database',
    'tagexplorer.lib.errors',
    'tagexplorer.lib.export',
    'tagexplorer.lib.filetype',
    'tagexplorer.lib.graph',
    'tagexplorer.lib.storage',
    'tagexplorer.services.repository',
    'tagexplorer.services.tagging',
    'tagexplorer.services.upload',
    'tagexplorer.cli',
]
for m in modules:
    try:
        importlib.import_module(m)
        print('import ok:', m)
    except Exception as e:
        print('import FAILED:', m, e)
        raise
print('done')
