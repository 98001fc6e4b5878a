"""python -m assetbuild（watch 模式的子构建也走这里）"""

from assetbuild.cli import main

if __name__ == "__main__":
    main()
